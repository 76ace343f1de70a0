from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, RoomDetailsResponse
from errors import RoomNotFound
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.post("/", response_model=CreateRoomResponse, status_code=201)
async def create_room(room: CreateRoomRequest, request: Request):
    # { "name": "optional-room-name", "description": "optional" }
    # Response 201: { "code": "7HD92F" }
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room creation request from {client_host}, name: {room.name}")
    code = request.app.state.chat.registry.create(room.name, room.description)
    return CreateRoomResponse(code=code)


@rooms_router.get("/{code}", response_model=RoomDetailsResponse)
async def get_room_details(code: str, request: Request):
    """
    Get room details including online user count.
    Rooms that are only in the durable store are restored into memory.
    """
    code = code.strip().upper()
    try:
        room = await request.app.state.chat.registry.resolve(code)
    except RoomNotFound:
        logger.warning(f"Room details failed: Room {code} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    logger.info(f"Room details retrieved for {code}: {room.user_count} users online")
    return RoomDetailsResponse(
        code=room.code,
        name=room.name,
        description=room.description,
        userCount=room.user_count,
        createdAt=room.created_at,
    )
