#!/usr/bin/env python3
"""
Minigame Demo — Target Clicker with Cancellable Timers
=======================================================

Plays the demo's target-clicking game with a simulated player:
  - a countdown task and a target-mover task run while the game is live
  - the player "hits" the target at random moments
  - stop() cancels every outstanding timer so nothing mutates state after
    the game ends

Event types covered:
  GAME_STARTED, GAME_TARGET_HIT, GAME_COMPLETED, FEATURE_USAGE, RAGE_CLICK

Run:
    python examples/minigame_demo.py [seconds]
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import sys
from dataclasses import dataclass, field
from typing import List, Optional

sys.path.insert(0, os.path.dirname(__file__))
from _demo_utils import close_sink, create_sink, create_tracker, print_events, setup_logging

logger = logging.getLogger("minigame_demo")


@dataclass
class GameState:
    is_playing: bool = False
    score: int = 0
    time_left: int = 30
    level: int = 1
    targets_hit: int = 0
    total_targets: int = 0
    high_score: int = 0
    target_position: dict = field(default_factory=lambda: {"x": 50.0, "y": 50.0})


class TargetGame:
    """Game loop driven by asyncio tasks owned by the game instance."""

    def __init__(self, tracker, duration: int = 30, tick: float = 1.0) -> None:
        self.tracker = tracker
        self.duration = duration
        self.tick = tick
        self.state = GameState()
        self._timers: List[asyncio.Task] = []
        self._finished: Optional[asyncio.Event] = None

    async def start(self) -> None:
        self.state = GameState(
            is_playing=True, time_left=self.duration, high_score=self.state.high_score
        )
        self._finished = asyncio.Event()
        self.tracker.game_started(self.duration)
        self.tracker.feature_usage("minigame", "started", {"game_type": "target_clicker"})

        self._timers = [
            asyncio.create_task(self._countdown()),
            asyncio.create_task(self._move_target()),
        ]

    async def _countdown(self) -> None:
        while self.state.is_playing:
            await asyncio.sleep(self.tick)
            self.state.time_left -= 1
            if self.state.time_left <= 0:
                self._end()
                return

    async def _move_target(self) -> None:
        while self.state.is_playing:
            await asyncio.sleep(self.tick * max(0.5, 1.5 - self.state.level * 0.1))
            self.state.target_position = {
                "x": random.uniform(10, 90),
                "y": random.uniform(20, 80),
            }
            self.state.total_targets += 1

    def hit_target(self) -> None:
        if not self.state.is_playing:
            return
        self.state.score += 10 * self.state.level
        self.state.targets_hit += 1
        self.state.level = self.state.score // 50 + 1
        self.tracker.game_target_hit(
            self.state.score, self.state.level, self.state.target_position
        )
        if self.state.targets_hit > 5:
            self.tracker.rage_click("game_target", "game", self.state.targets_hit)

    def _end(self) -> None:
        self.state.is_playing = False
        self.state.high_score = max(self.state.high_score, self.state.score)
        completed = self.tracker.game_completed(
            self.state.score,
            self.state.high_score,
            self.state.targets_hit,
            self.state.total_targets,
        )
        accuracy = completed.payload["accuracy"] if completed else 0
        self.tracker.feature_usage(
            "minigame",
            "completed",
            {"game_type": "target_clicker", "score": self.state.score, "accuracy": accuracy},
        )
        self._finished.set()

    async def stop(self) -> None:
        """Cancel every outstanding timer; safe to call more than once."""
        for task in self._timers:
            task.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers = []
        self.state.is_playing = False

    async def wait(self) -> None:
        await self._finished.wait()


async def play(duration: int) -> None:
    setup_logging()
    sink = create_sink()
    tracker, _ = create_tracker(sink)
    tracker.page_view("game")

    game = TargetGame(tracker, duration=duration, tick=0.1)
    await game.start()

    async def player() -> None:
        while game.state.is_playing:
            await asyncio.sleep(random.uniform(0.05, 0.3))
            game.hit_target()

    player_task = asyncio.create_task(player())
    try:
        await game.wait()
    finally:
        player_task.cancel()
        await asyncio.gather(player_task, return_exceptions=True)
        await game.stop()

    logger.info(
        "Game over: score=%d hits=%d targets=%d",
        game.state.score,
        game.state.targets_hit,
        game.state.total_targets,
    )
    print_events(sink, "Minigame")
    close_sink(sink)


if __name__ == "__main__":
    seconds = int(sys.argv[1]) if len(sys.argv) > 1 else 10
    asyncio.run(play(seconds))
