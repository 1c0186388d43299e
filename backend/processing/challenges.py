import random
from dataclasses import dataclass
from enum import Enum

from config import REQUIRED_BLINKS


class ChallengeAction(str, Enum):
    BLINK = "blink"
    TURN_LEFT = "turn_left"
    TURN_RIGHT = "turn_right"
    MOUTH_OPEN = "mouth_open"
    LEAN_FORWARD = "lean_forward"


@dataclass
class ChallengeStep:
    action: ChallengeAction
    label: str
    done: bool = False


def challenge_label(action: ChallengeAction, required_blinks: int = REQUIRED_BLINKS) -> str:
    labels = {
        ChallengeAction.BLINK: f"Blink {required_blinks}×",
        ChallengeAction.TURN_LEFT: "Turn Head Left",
        ChallengeAction.TURN_RIGHT: "Turn Head Right",
        ChallengeAction.MOUTH_OPEN: "Open Mouth",
        ChallengeAction.LEAN_FORWARD: "Move Forward (closer)",
    }
    return labels[action]


def build_challenge_sequence(required_blinks: int = REQUIRED_BLINKS, rng: random.Random | None = None) -> list[ChallengeStep]:
    """Every action exactly once, in uniformly random order."""
    steps = [ChallengeStep(action, challenge_label(action, required_blinks)) for action in ChallengeAction]
    (rng or random.Random()).shuffle(steps)
    return steps


class ChallengeSequencer:
    def __init__(self, steps: list[ChallengeStep]):
        self.steps = steps
        self.index = 0
        self.completed = not steps
        self.spoofed = False

    @property
    def active(self) -> ChallengeStep | None:
        if self.completed or self.index >= len(self.steps):
            return None
        return self.steps[self.index]

    def mark_spoofed(self):
        self.spoofed = True

    def advance(self, condition_met: bool) -> bool:
        """Complete the active step if its condition holds. Returns True if a step completed."""
        if self.completed or self.spoofed or not condition_met:
            return False
        current = self.active
        if current is None:
            return False
        current.done = True
        self.index += 1
        if self.index >= len(self.steps):
            self.completed = True
        return True

    def entries(self, active_progress: float = 0.0) -> list[dict]:
        """Render-ready rows; progress is a percent for the active row only."""
        rows = []
        for idx, step in enumerate(self.steps):
            is_active = idx == self.index and not step.done and not self.completed
            if step.done:
                progress = 100
            elif is_active:
                progress = int(round(min(max(active_progress, 0.0), 1.0) * 100))
            else:
                progress = 0
            rows.append({
                "key": step.action.value,
                "label": step.label,
                "done": step.done,
                "active": is_active,
                "progress": progress,
            })
        return rows
