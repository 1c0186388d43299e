import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager

import cv2
import numpy as np
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from config import LANDMARKER_PATH, CORS_ORIGINS, LivenessConfig
from processing.face_detection import create_landmarker, detect_face
from processing.pipeline import SessionController
from schemas.messages import FrameResponse, ErrorResponse

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.config = LivenessConfig()
    print(f"Landmarker model: {LANDMARKER_PATH} (found={LANDMARKER_PATH.exists()})")
    print("Server ready.")
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok", "landmarker_found": LANDMARKER_PATH.exists()}


def open_session(config: LivenessConfig):
    """Create a landmarker and a started controller that closes it on release."""
    landmarker = create_landmarker()
    controller = SessionController(config, on_release=landmarker.close)
    events = controller.start()
    return controller, landmarker, events


def frame_response(controller: SessionController, events, face_detected: bool) -> dict:
    return FrameResponse(
        phase=controller.phase.value,
        face_detected=face_detected,
        events=events,
    ).model_dump(mode="json")


@app.websocket("/ws/verify/liveness")
async def liveness_verification(websocket: WebSocket):
    await websocket.accept()
    config = getattr(websocket.app.state, "config", None) or LivenessConfig()

    try:
        controller, landmarker, events = open_session(config)
    except (RuntimeError, ValueError, OSError) as e:
        logger.info(f"WS session refused: landmarker unavailable: {e}")
        await websocket.send_json(ErrorResponse(message=f"Landmarker unavailable: {e}").model_dump())
        await websocket.close()
        return

    await websocket.send_json(frame_response(controller, events, face_detected=False))

    frame_count = 0
    last_ts = 0
    latest_frame_bytes: bytes | None = None
    commands: list[str] = []

    logger.info("WS liveness session started")

    async def reader():
        """Continuously read from WebSocket, keeping only the latest binary frame."""
        nonlocal latest_frame_bytes
        try:
            while True:
                message = await websocket.receive()

                if message.get("type") == "websocket.disconnect":
                    break

                if "text" in message and message["text"]:
                    try:
                        data = json.loads(message["text"])
                        if isinstance(data, dict) and data.get("type") in ("reset", "stop"):
                            logger.info(f"WS {data['type']} command received")
                            commands.append(data["type"])
                            latest_frame_bytes = None
                    except json.JSONDecodeError:
                        pass

                if "bytes" in message and message["bytes"]:
                    # Always overwrite; only the latest frame matters
                    latest_frame_bytes = message["bytes"]

        except (WebSocketDisconnect, RuntimeError):
            pass

    async def processor():
        """Process the latest frame, skipping stale ones. Session state is only touched here."""
        nonlocal latest_frame_bytes, frame_count, last_ts, controller, landmarker
        try:
            while True:
                while commands:
                    command = commands.pop(0)
                    stop_events = controller.stop()
                    if command == "reset":
                        try:
                            controller, landmarker, events = open_session(config)
                        except (RuntimeError, ValueError, OSError) as e:
                            logger.info(f"WS reset refused: landmarker unavailable: {e}")
                            await websocket.send_json(ErrorResponse(message=f"Landmarker unavailable: {e}").model_dump())
                            await websocket.close()
                            return
                        await websocket.send_json({"type": "reset_ack", "phase": controller.phase.value})
                        await websocket.send_json(frame_response(controller, events, face_detected=False))
                    elif stop_events:
                        await websocket.send_json(frame_response(controller, stop_events, face_detected=False))

                if latest_frame_bytes is None:
                    events = controller.tick()
                    if events:
                        await websocket.send_json(frame_response(controller, events, face_detected=False))
                    await asyncio.sleep(0.01)
                    continue

                jpeg_bytes = latest_frame_bytes
                latest_frame_bytes = None

                if not controller.running:
                    continue

                frame = cv2.imdecode(
                    np.frombuffer(jpeg_bytes, np.uint8),
                    cv2.IMREAD_COLOR,
                )
                if frame is None:
                    await websocket.send_json(ErrorResponse(message="Could not decode frame").model_dump())
                    continue

                # The landmarker needs strictly increasing timestamps
                last_ts = max(int(time.monotonic() * 1000), last_ts + 1)
                frame_count += 1
                landmark_frame = await asyncio.to_thread(detect_face, landmarker, frame, last_ts)
                events = controller.process_frame(landmark_frame)

                if frame_count <= 3 or frame_count % 30 == 0 or controller.verdict is not None:
                    logger.info(f"WS frame #{frame_count} -> phase={controller.phase.value}, face={landmark_frame.has_face}")

                try:
                    await websocket.send_json(frame_response(controller, events, landmark_frame.has_face))
                except (WebSocketDisconnect, RuntimeError):
                    break

        except (WebSocketDisconnect, RuntimeError):
            pass
        except asyncio.CancelledError:
            pass

    try:
        reader_task = asyncio.create_task(reader())
        processor_task = asyncio.create_task(processor())

        # When reader finishes (disconnect), cancel processor
        await reader_task
        processor_task.cancel()
        try:
            await processor_task
        except asyncio.CancelledError:
            pass

    except (WebSocketDisconnect, RuntimeError) as e:
        logger.info(f"WS session ended: {type(e).__name__}: {e}")
    finally:
        logger.info(f"WS cleanup: processed {frame_count} frames, releasing landmarker")
        controller.stop()
