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
Cancellation token for a single in-flight generation turn.
"""

from typing import Callable, List, Optional

from .models import TurnState, TERMINAL_STATES
from .utils import logger, generate_id


class GenerationHandle:
    """
    One handle per turn. The session controller keeps at most one live handle
    per session and cancels it before starting the next turn.

    `cancel()` flips the flag that every consumer (the token callback, the
    orchestrator's stream loop) checks before mutating anything, then runs
    the registered abort hooks so an in-flight runtime call is dropped
    without waiting for its next token.
    """

    def __init__(self, session_id: str, message_id: Optional[str] = None, prompt_id: Optional[str] = None):
        self.turn_id = f"turn_{generate_id()}"
        self.session_id = session_id
        self.message_id = message_id
        self.prompt_id = prompt_id
        self.state = TurnState.IDLE
        self._cancelled = False
        self._abort_hooks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def cancel(self) -> bool:
        """Signal cancellation. Returns False if the turn had already settled."""
        if self._cancelled or self.finished:
            return False
        self._cancelled = True
        self.state = TurnState.CANCELLED
        logger.info(f"Generation cancelled: {self.turn_id} (session {self.session_id})")
        self._run_abort_hooks()
        return True

    def on_abort(self, hook: Callable[[], None]) -> None:
        """Register `hook` to run on cancel. Runs at once if already cancelled."""
        if self._cancelled:
            hook()
            return
        self._abort_hooks.append(hook)

    def _run_abort_hooks(self) -> None:
        hooks, self._abort_hooks = self._abort_hooks, []
        for hook in hooks:
            try:
                hook()
            except Exception as e:
                logger.warning(f"Abort hook failed for {self.turn_id}: {e}")

    def transition(self, state: TurnState) -> bool:
        """
        Move to `state` unless the turn is already terminal. A cancelled turn
        stays cancelled even if the stream settles afterwards.
        """
        if self.finished:
            return False
        self.state = state
        if self.finished:
            self._abort_hooks = []
        return True

    def __call__(self) -> bool:
        # Lets the handle be passed anywhere a check_abort_fn is expected.
        return self._cancelled

    def __repr__(self) -> str:
        return f"GenerationHandle({self.turn_id}, state={self.state.value}, cancelled={self._cancelled})"
