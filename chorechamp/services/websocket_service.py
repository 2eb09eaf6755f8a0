from fastapi import WebSocket
from typing import Dict
import json
import asyncio
import logging
import redis.asyncio as redis
from chorechamp.services.auth_service import auth_service
from chorechamp.services.redis_service import UPDATES_CHANNEL, redis_service

logger = logging.getLogger(__name__)

class WebSocketManager:
    def __init__(self):
        # websocket -> id of the connected user
        self.active_connections: Dict[WebSocket, str] = {}
        self.redis_client = None
        self.subscriber_task = None

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        self.active_connections[websocket] = user_id

        # Start Redis subscriber if not already started
        if not self.redis_client:
            # Create async Redis client with same config as redis_service
            connection_kwargs = redis_service.redis_client.connection_pool.connection_kwargs
            self.redis_client = redis.Redis(
                host=connection_kwargs.get('host'),
                port=connection_kwargs.get('port'),
                password=connection_kwargs.get('password'),
                decode_responses=True
            )
            self.subscriber_task = asyncio.create_task(self.redis_subscriber())

    def disconnect(self, websocket: WebSocket):
        self.active_connections.pop(websocket, None)

    async def send_personal_message(self, message: str, websocket: WebSocket):
        try:
            await websocket.send_text(message)
        except Exception:
            logger.warning("Error sending message to websocket", exc_info=True)
            self.disconnect(websocket)

    async def broadcast(self, message: str):
        """Forward an update to connections of the household it concerns"""
        if not self.active_connections:
            return

        try:
            household_id = json.loads(message).get("household_id")
        except (ValueError, AttributeError):
            logger.warning("Dropping malformed update: %r", message)
            return

        # Membership is looked up per broadcast so joins and removals after connect apply
        households = {}
        for connection, user_id in list(self.active_connections.items()):
            if household_id is not None:
                if user_id not in households:
                    user = auth_service.get_user_by_id(user_id)
                    households[user_id] = user.household_id if user else None
                if households[user_id] != household_id:
                    continue
            try:
                await connection.send_text(message)
            except Exception:
                logger.warning("Error broadcasting to connection", exc_info=True)
                self.disconnect(connection)

    async def redis_subscriber(self):
        try:
            pubsub = self.redis_client.pubsub()
            await pubsub.subscribe(UPDATES_CHANNEL)
            logger.info("Subscribed to Redis channel %s", UPDATES_CHANNEL)

            async for message in pubsub.listen():
                if message["type"] == "message":
                    logger.debug("Broadcasting message: %s", message["data"])
                    await self.broadcast(message["data"])
        except Exception:
            logger.exception("Redis subscriber stopped")
            self.redis_client = None

websocket_manager = WebSocketManager()
