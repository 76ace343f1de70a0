REDIS_META_KEY = "room:meta:{code}" # room code - hash of durable room record
REDIS_MESSAGES_KEY = "room:messages:{code}" # room code - list of JSON messages, oldest first

# **Example `room:meta:{code}` hash fields**
# - `code` = `{roomCode}`
# - `name` = display name (defaults to "Room {code}")
# - `description` = optional
# - `created_at` = ISO timestamp, written once
# - `last_active` = ISO timestamp, refreshed on every upsert
#
# Both keys carry a TTL that is refreshed on activity; an idle room expires on its own.
