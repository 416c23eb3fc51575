"""Pygame shell for the visual noise contrast threshold test.

Deterministic timing/staircase/RNG/state lives in vss_threshold/* (core modules);
this module only owns the window, keyboard bindings and text screens.
"""

from __future__ import annotations

import logging
import os
import random
from collections.abc import Callable
from typing import Protocol

import pygame

from .clock import RealClock
from .experiment import ContrastThresholdEngine, EngineSnapshot, build_contrast_threshold_test
from .render import BLANK_RGB
from .results import log_session_result, session_result_from_engine
from .sequencer import STIMULUS_PHASES

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

SEED_ENV = "VSS_SEED"
LOG_LEVEL_ENV = "VSS_LOG_LEVEL"

TEXT_RGB = (20, 20, 20)
MUTED_RGB = (70, 70, 70)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screen: Screen | None = None
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def surface(self) -> pygame.Surface:
        return self._surface

    def set_surface(self, surface: pygame.Surface) -> None:
        self._surface = surface

    def set_screen(self, screen: Screen) -> None:
        self._screen = screen

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if self._screen is not None:
            self._screen.handle_event(event)

    def render(self) -> None:
        if self._screen is not None:
            self._screen.render(self._surface)


class ThresholdTestScreen:
    def __init__(self, app: App, *, engine_factory: Callable[[pygame.Surface], ContrastThresholdEngine]) -> None:
        self._app = app
        self._engine = engine_factory(app.surface)
        self._title_font = pygame.font.Font(None, 40)
        self._body_font = app.font
        self._hint_font = pygame.font.Font(None, 22)
        self._was_running = False

    @property
    def engine(self) -> ContrastThresholdEngine:
        return self._engine

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type in (pygame.VIDEORESIZE, pygame.WINDOWSIZECHANGED):
            self._surface_changed()
            return
        if event.type == pygame.KEYDOWN:
            self._handle_key(event.key)

    def _handle_key(self, key: int) -> None:
        engine = self._engine
        snap = engine.snapshot()

        if key == pygame.K_f:
            self._toggle_fullscreen()
        elif key in (pygame.K_1, pygame.K_KP1):
            engine.respond(1, token=snap.awaiting_token)
        elif key in (pygame.K_2, pygame.K_KP2):
            engine.respond(2, token=snap.awaiting_token)
        elif key == pygame.K_SPACE:
            if not snap.running and not snap.instructions_visible:
                engine.start()
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            if snap.instructions_visible:
                engine.confirm_start()
            elif snap.completion_visible:
                engine.start()
        elif key == pygame.K_ESCAPE:
            if snap.running or snap.instructions_visible:
                engine.stop()
            else:
                self._app.quit()

    def _toggle_fullscreen(self) -> None:
        try:
            pygame.display.toggle_fullscreen()
        except pygame.error as exc:
            logger.warning("Fullscreen toggle failed: %s", exc)
            return
        self._surface_changed()

    def _surface_changed(self) -> None:
        surface = pygame.display.get_surface()
        if surface is None:
            return
        self._app.set_surface(surface)
        self._engine.on_surface_changed(surface)

    def render(self, surface: pygame.Surface) -> None:
        engine = self._engine
        engine.update()
        snap = engine.snapshot()
        self._report_if_finished(snap)

        # Stimulus frames belong to the engine; nothing is drawn over them.
        if snap.running and snap.phase in STIMULUS_PHASES:
            return

        surface.fill(BLANK_RGB)
        if snap.instructions_visible or snap.completion_visible:
            self._draw_lines(surface, snap.prompt.split("\n"))
        elif snap.awaiting_response:
            self._draw_lines(surface, [snap.prompt])
            self._draw_status(surface, snap)
        elif not snap.running:
            self._draw_lines(surface, [snap.title, "", snap.prompt])
            self._draw_status(surface, snap)
        self._draw_hint(surface)

    def _report_if_finished(self, snap: EngineSnapshot) -> None:
        if self._was_running and not snap.running and snap.trial_index > 0:
            log_session_result(session_result_from_engine(self._engine))
        self._was_running = snap.running

    def _draw_lines(self, surface: pygame.Surface, lines: list[str]) -> None:
        w, h = surface.get_size()
        if not lines:
            return
        line_h = self._body_font.get_linesize()
        y = h // 2 - (line_h * len(lines)) // 2
        for idx, line in enumerate(lines):
            font = self._title_font if idx == 0 and len(lines) > 1 else self._body_font
            if line:
                text = font.render(line, True, TEXT_RGB)
                surface.blit(text, text.get_rect(midtop=(w // 2, y)))
            y += line_h

    def _draw_status(self, surface: pygame.Surface, snap: EngineSnapshot) -> None:
        est = snap.threshold
        parts = [
            f"Trials: {snap.trial_index}",
            f"Correct: {snap.correct}",
            f"Incorrect: {snap.incorrect}",
            f"Reversals: {snap.reversal_count}",
            "Threshold: n/a" if est is None else f"Threshold: {est.rms_percent:.2f}% RMS",
        ]
        text = self._hint_font.render("   ".join(parts), True, MUTED_RGB)
        surface.blit(text, (16, 12))

    def _draw_hint(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        footer = "1/2: Respond  |  Space: Start  |  Enter: Confirm  |  Esc: Stop/Quit  |  F: Fullscreen"
        foot = self._hint_font.render(footer, True, MUTED_RGB)
        surface.blit(foot, foot.get_rect(midbottom=(w // 2, h - 10)))


def _configure_logging() -> None:
    name = os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def _session_seed() -> int:
    raw = os.environ.get(SEED_ENV, "").strip()
    if raw == "":
        return _new_seed()
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", SEED_ENV, raw)
        return _new_seed()


def _open_display() -> tuple[pygame.Surface, bool]:
    """Open the window, preferring vsync so flips land on display refreshes."""

    try:
        surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE | pygame.SCALED, vsync=1)
    except pygame.error as exc:
        logger.warning("Vsync unavailable (%s); capping at %d FPS", exc, TARGET_FPS)
        return pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE), False
    return surface, True


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    _configure_logging()
    pygame.init()

    pygame.display.set_caption("Visual Noise Contrast Threshold")
    surface, vsync = _open_display()

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    real_clock = RealClock()
    seed = _session_seed()
    logger.info("Using seed %d", seed)

    app.set_screen(
        ThresholdTestScreen(
            app,
            engine_factory=lambda s: build_contrast_threshold_test(
                clock=real_clock,
                seed=seed,
                surface=s,
            ),
        )
    )

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(0 if vsync else TARGET_FPS)
    finally:
        pygame.quit()

    return 0
