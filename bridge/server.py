"""
FastAPI server for simulator-Python communication bridge.
Receives telemetry, runs the MPC stack and returns steering/throttle commands.
"""

import asyncio
import time
import logging
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel
import uvicorn

from bridge.protocol import MANUAL_MESSAGE, format_event, is_event_message, parse_event

# Log slow cycles to identify simulator<->Python stalls.
SLOW_REQUEST_SECONDS = 0.1


def _get_bridge_logger() -> logging.Logger:
    log_path = Path(__file__).resolve().parents[1] / "tmp" / "logs" / "mpc_bridge.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    bridge_logger = logging.getLogger("mpc_bridge")
    bridge_logger.setLevel(logging.INFO)

    if not any(isinstance(h, logging.FileHandler) and h.baseFilename == str(log_path)
               for h in bridge_logger.handlers):
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        handler.setFormatter(formatter)
        bridge_logger.addHandler(handler)

    return bridge_logger


logger = _get_bridge_logger()


class CommandMessage(BaseModel):
    """Control command to the simulator."""
    steering_angle: float  # -1.0 to 1.0
    throttle: float        # -1.0 to 1.0
    mpc_x: List[float] = []   # predicted trajectory (vehicle frame)
    mpc_y: List[float] = []
    next_x: List[float] = []  # reference curve (vehicle frame)
    next_y: List[float] = []
    status: str = "ok"


def handle_message(stack, message: str) -> Optional[str]:
    """
    Turn one websocket frame into the reply frame, if any.

    Telemetry events produce a "steer" event; event frames without data
    get the manual-driving reply; anything else is ignored.
    """
    if not is_event_message(message):
        return None
    event = parse_event(message)
    if event is None:
        return MANUAL_MESSAGE
    name, data = event
    if name != "telemetry":
        return None

    start_time = time.time()
    command = stack.process_telemetry(data)
    duration = time.time() - start_time
    if duration > SLOW_REQUEST_SECONDS:
        logger.warning("[SLOW] telemetry cycle duration=%.3fs status=%s", duration, command.status)
    if command.status != "ok":
        logger.warning("[COMMAND_FALLBACK] status=%s steering=%.4f throttle=%.4f",
                       command.status, command.steering_angle, command.throttle)
    return format_event("steer", command.to_message())


def create_app(stack) -> FastAPI:
    """Build the bridge app around an MPCStack."""
    app = FastAPI(title="MPC Bridge Server")
    app.state.stack = stack

    @app.websocket("/ws")
    async def simulator_session(websocket: WebSocket):
        """
        One simulator session. Frames are processed one at a time; the next
        frame is not read until the reply to the current one has been sent.
        """
        await websocket.accept()
        stack.reset()
        logger.info("Connected: %s", websocket.client)
        try:
            while True:
                message = await websocket.receive_text()
                reply = handle_message(stack, message)
                if reply is None:
                    continue
                if reply != MANUAL_MESSAGE and stack.emit_delay_s > 0.0:
                    # Emulate actuation latency before the command reaches the vehicle
                    await asyncio.sleep(stack.emit_delay_s)
                await websocket.send_text(reply)
        except WebSocketDisconnect as e:
            logger.info("Disconnected: code=%s", e.code)
        finally:
            stack.reset()

    @app.post("/api/telemetry", response_model=CommandMessage)
    async def receive_telemetry(telemetry: dict):
        """
        Run one control cycle on a decoded telemetry record.

        Args:
            telemetry: Telemetry fields (ptsx, ptsy, x, y, psi, speed,
                steering_angle, throttle)
        """
        command = stack.process_telemetry(telemetry)
        return CommandMessage(**command.to_message(), status=command.status)

    @app.post("/api/session/reset")
    async def reset_session():
        """Start a new session without carried-over state."""
        stack.reset()
        return {"status": "reset", "timestamp": time.time()}

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "backend": stack.controller.backend.name,
            "cycles": stack.cycle_count,
        }

    return app


def run_server(stack, host: str = "0.0.0.0", port: int = 4567):
    """Run the bridge server."""
    logger.info("Starting MPC Bridge Server on %s:%d", host, port)
    print(f"Starting MPC Bridge Server on {host}:{port}")
    print("Endpoints:")
    print("  WS   /ws - Simulator session (socket.io event frames)")
    print("  POST /api/telemetry - One telemetry record in, one command out")
    print("  POST /api/session/reset - Reset session state")
    print("  GET  /api/health - Health check")

    uvicorn.run(create_app(stack), host=host, port=port)


if __name__ == "__main__":
    from mpc_stack import MPCStack

    run_server(MPCStack())
