# LocalChat — Local Assistant Engine
# Copyright (C) 2026 Pankaj Varma
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
LocalChat Telemetry Utility
Records the state transitions of generation turns for status polling.
"""
from typing import Dict, Any, List, Optional
import time
from .models import TurnState
from .utils import logger

# Finished turns kept around for the status endpoint
MAX_FINISHED_TURNS = 100


class TurnTelemetry:
    """Captured lifecycle of one generation turn"""
    def __init__(self, turn_id: str, session_id: str, model: str):
        self.turn_id = turn_id
        self.session_id = session_id
        self.model = model
        self.state = TurnState.IDLE
        self.start_time = time.time()
        self.end_time: Optional[float] = None
        self.transitions: List[Dict[str, Any]] = []
        self.metadata: Dict[str, Any] = {}

    def record(self, state: TurnState):
        self.state = state
        self.transitions.append({"state": state.value, "at": round(time.time() - self.start_time, 3)})

    def finish(self, metadata: Optional[Dict[str, Any]] = None):
        self.end_time = time.time()
        if metadata:
            self.metadata.update(metadata)

    def to_dict(self) -> Dict[str, Any]:
        duration = (self.end_time - self.start_time) if self.end_time else (time.time() - self.start_time)
        return {
            "turn_id": self.turn_id,
            "session_id": self.session_id,
            "model": self.model,
            "state": self.state.value,
            "duration": round(duration, 3),
            "status": "finished" if self.end_time else "running",
            "transitions": list(self.transitions),
            "metadata": self.metadata
        }


class TelemetryManager:
    """Tracks running and recently finished turns"""
    def __init__(self, max_finished: int = MAX_FINISHED_TURNS):
        self.turns: Dict[str, TurnTelemetry] = {}
        self.max_finished = max_finished

    def start_turn(self, turn_id: str, session_id: str, model: str) -> str:
        self._prune()
        self.turns[turn_id] = TurnTelemetry(turn_id, session_id, model)
        logger.info(f"📊 Turn start: {turn_id} (session {session_id}, model {model})")
        return turn_id

    def transition(self, turn_id: str, state: TurnState):
        turn = self.turns.get(turn_id)
        if turn:
            turn.record(state)
            logger.debug(f"📊 {turn_id} -> {state.value}")

    def end_turn(self, turn_id: str, state: TurnState, metadata: Optional[Dict[str, Any]] = None):
        turn = self.turns.get(turn_id)
        if turn and turn.end_time is None:
            turn.record(state)
            turn.finish(metadata)
            logger.info(f"📊 Turn end: {turn_id} [{state.value}] in {turn.end_time - turn.start_time:.2f}s")

    def get_turn(self, turn_id: str) -> Optional[Dict[str, Any]]:
        turn = self.turns.get(turn_id)
        return turn.to_dict() if turn else None

    def get_active_status(self) -> Dict[str, Any]:
        """Returns the most recent running turn"""
        running = [t.to_dict() for t in self.turns.values() if t.end_time is None]
        return running[-1] if running else {"status": "idle"}

    def clear_all(self):
        self.turns = {}
        logger.info("📊 Telemetry: State cleared")

    def _prune(self):
        finished = [k for k, t in self.turns.items() if t.end_time is not None]
        for key in finished[:max(0, len(finished) - self.max_finished)]:
            del self.turns[key]
