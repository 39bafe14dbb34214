"""WebSocket 处理器"""
import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.events import Event, EventBus
from app.services.container import get_container


logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/events")
async def websocket_events(websocket: WebSocket):
    """订单事件流端点（new_order / order_update）"""
    event_bus: EventBus = get_container().event_bus
    await websocket.accept()

    queue: asyncio.Queue = asyncio.Queue()
    await event_bus.register_websocket_queue(queue)
    logger.info(f"WebSocket 连接已建立，当前连接数: {event_bus.websocket_count}")

    try:
        send_task = asyncio.create_task(_send_events(websocket, queue))
        receive_task = asyncio.create_task(_receive_messages(websocket))

        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except WebSocketDisconnect:
        logger.info("WebSocket 客户端主动断开")
    except Exception as e:
        logger.error(f"WebSocket 错误: {e}")
    finally:
        await event_bus.unregister_websocket_queue(queue)
        logger.info(f"WebSocket 连接已断开，当前连接数: {event_bus.websocket_count}")


async def _send_events(websocket: WebSocket, queue: asyncio.Queue):
    """发送事件到 WebSocket"""
    while True:
        event: Event = await queue.get()
        try:
            await websocket.send_text(event.to_json())
        except Exception as e:
            logger.error(f"发送 WebSocket 消息失败: {e}")
            break


async def _receive_messages(websocket: WebSocket):
    """接收 WebSocket 消息（用于保持连接和处理 ping）"""
    while True:
        try:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
        except WebSocketDisconnect:
            break
        except Exception:
            break
