from typing import Dict, List, Optional, Tuple

from schemas.commands import NavigationFrame


class NavigationStack:
    """
    Per-user stack of the menus shown so far.

    `pop` means "go back one step": it drops the top frame and returns the one
    now displayed. The root frame can never be popped.
    """

    def __init__(self):
        self._stacks: Dict[int, List[NavigationFrame]] = {}

    def push(self, user_id: int, frame: NavigationFrame) -> None:
        self._stacks.setdefault(user_id, []).append(frame)

    def pop(self, user_id: int) -> Optional[NavigationFrame]:
        stack = self._stacks.get(user_id)
        if not stack or len(stack) <= 1:
            return None
        stack.pop()
        return stack[-1]

    def peek(self, user_id: int) -> Optional[NavigationFrame]:
        stack = self._stacks.get(user_id)
        return stack[-1] if stack else None

    def depth(self, user_id: int) -> int:
        return len(self._stacks.get(user_id, ()))

    def reset(self, user_id: int, root: NavigationFrame) -> None:
        self._stacks[user_id] = [root]

    def snapshot(self, user_id: int) -> Tuple[NavigationFrame, ...]:
        return tuple(self._stacks.get(user_id, ()))

    def restore(self, user_id: int, frames: Tuple[NavigationFrame, ...]) -> None:
        if frames:
            self._stacks[user_id] = list(frames)
        else:
            self._stacks.pop(user_id, None)

    def discard(self, user_id: int) -> None:
        self._stacks.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._stacks)
