"""
Playback session state machine.

One session drives one adaptive-streaming engine through manifest loading,
playback, error recovery and teardown. Engine callbacks, timer expiries and
user actions are all turned into events and fed through a single transition
function, serialized on the owning event loop. Every engine and timer
callback is bound to the generation it was created for, so anything that
arrives after a restart or close is dropped instead of touching state.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Optional, Protocol, Sequence

from iptv_relay.config import Settings, get_settings
from iptv_relay.errors import EngineUnsupported, PlaybackError, PlaybackFatalError
from iptv_relay.models.channel import Channel
from iptv_relay.services.error_classifier import EngineError, ErrorKind, classify

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Stream is taking too long to load. Please try another channel."
PLAY_FAILED_MESSAGE = "Failed to start playback. Please try again."
UNSUPPORTED_MESSAGE = "HLS not supported in this environment"


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    ERROR = "error"
    CLOSED = "closed"


# Events

@dataclass(frozen=True)
class Start:
    url: str


@dataclass(frozen=True)
class SwitchChannel:
    index: int


@dataclass(frozen=True)
class Close:
    pass


@dataclass(frozen=True)
class ManifestParsed:
    levels: int = 0


@dataclass(frozen=True)
class FragmentLoaded:
    pass


@dataclass(frozen=True)
class DeadlineElapsed:
    pass


@dataclass(frozen=True)
class PointerActivity:
    pass


@dataclass(frozen=True)
class HideControls:
    pass


@dataclass(frozen=True)
class ToggleGuide:
    mini: bool = False


class PlaybackEngine(Protocol):
    """Adaptive-streaming engine (hls.js-like) driven by the session."""

    def load_source(self, url: str) -> None: ...

    def start_load(self) -> None: ...

    def recover_media_error(self) -> None: ...

    def play(self) -> None: ...

    def destroy(self) -> None: ...


# Receives ManifestParsed / FragmentLoaded / EngineError from the engine
EngineEmitter = Callable[[Any], None]
EngineFactory = Callable[[EngineEmitter], PlaybackEngine]


class Scheduler(Protocol):
    """Subset of the asyncio event loop API the session needs."""

    def time(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any: ...


class ScheduledTask:
    """
    A single cancellable delayed callback with one owner.
    Scheduling always cancels whatever was pending first.
    """

    def __init__(self, get_scheduler: Callable[[], Scheduler]):
        self._get_scheduler = get_scheduler
        self._handle = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, delay: float, callback: Callable[[], None]):
        self.cancel()
        self._handle = self._get_scheduler().call_later(delay, self._fire, callback)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, callback: Callable[[], None]):
        self._handle = None
        callback()


_UI_TRANSITIONS = {
    SwitchChannel: "_on_switch_channel",
    PointerActivity: "_on_pointer_activity",
    HideControls: "_on_hide_controls",
    ToggleGuide: "_on_toggle_guide",
}

TRANSITIONS = {
    SessionState.IDLE: {
        Start: "_on_start",
        Close: "_on_close",
        **_UI_TRANSITIONS,
    },
    SessionState.LOADING: {
        Start: "_on_start",
        ManifestParsed: "_on_manifest_parsed",
        FragmentLoaded: "_on_progress",
        EngineError: "_on_engine_error",
        DeadlineElapsed: "_on_deadline",
        Close: "_on_close",
        **_UI_TRANSITIONS,
    },
    SessionState.PLAYING: {
        Start: "_on_start",
        FragmentLoaded: "_on_progress",
        EngineError: "_on_engine_error",
        Close: "_on_close",
        **_UI_TRANSITIONS,
    },
    SessionState.ERROR: {
        Start: "_on_start",
        Close: "_on_close",
        **_UI_TRANSITIONS,
    },
    SessionState.CLOSED: {},
}


class PlaybackSession:
    """
    Owns at most one engine (and so one upstream connection) at a time.

    A closed session is terminal; create a new one for further playback.
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        channel_list: Sequence[Channel] = (),
        url_of: Optional[Callable[[Channel], str]] = None,
        current_index: int = 0,
        settings: Optional[Settings] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.settings = settings or get_settings()
        self._engine_factory = engine_factory
        self._scheduler = scheduler
        self._engine: Optional[PlaybackEngine] = None
        self._generation = 0
        self._queue: deque = deque()
        self._dispatching = False

        self.state = SessionState.IDLE
        self.active_url: Optional[str] = None
        self.load_deadline: Optional[float] = None
        self.error: Optional[PlaybackError] = None
        self.channel_list = list(channel_list)
        self.url_of = url_of
        self.current_index = current_index

        self.controls_visible = True
        self.guide_visible = False
        self.mini_guide_visible = False

        self._deadline = ScheduledTask(self._get_scheduler)
        self._controls_timer = ScheduledTask(self._get_scheduler)

    def _get_scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    @property
    def error_message(self) -> Optional[str]:
        return self.error.user_message if self.error else None

    @property
    def current_channel(self) -> Optional[Channel]:
        if 0 <= self.current_index < len(self.channel_list):
            return self.channel_list[self.current_index]
        return None

    @property
    def has_engine(self) -> bool:
        return self._engine is not None

    # User actions

    def start(self, url: str):
        self.dispatch(Start(url))

    def switch_channel(self, index: int):
        self.dispatch(SwitchChannel(index))

    def close(self):
        self.dispatch(Close())

    def pointer_activity(self):
        self.dispatch(PointerActivity())

    def toggle_guide(self):
        self.dispatch(ToggleGuide())

    def toggle_mini_guide(self):
        self.dispatch(ToggleGuide(mini=True))

    # Dispatch

    def dispatch(self, event: Any):
        """Feed an event from the current owner (user action)."""
        self._enqueue(event, None)

    def _dispatch_from(self, generation: int, event: Any):
        """Feed an event from an engine or timer bound to `generation`."""
        self._enqueue(event, generation)

    def _enqueue(self, event: Any, generation: Optional[int]):
        self._queue.append((event, generation))
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                queued, bound_to = self._queue.popleft()
                self._transition(queued, bound_to)
        finally:
            self._dispatching = False

    def _transition(self, event: Any, generation: Optional[int]):
        if generation is not None and generation != self._generation:
            logger.debug(f"Dropping stale {type(event).__name__} (generation {generation} != {self._generation})")
            return

        handler_name = TRANSITIONS[self.state].get(type(event))
        if handler_name is None:
            logger.debug(f"Ignoring {type(event).__name__} in state {self.state.value}")
            return
        getattr(self, handler_name)(event)

    def _set_state(self, state: SessionState):
        if state != self.state:
            logger.info(f"Playback session {self.state.value} -> {state.value}")
            self.state = state

    # Engine handling

    def _teardown(self):
        """Cancel the load deadline and release the engine. Pending callbacks become stale."""
        self._deadline.cancel()
        self.load_deadline = None
        self._generation += 1
        engine, self._engine = self._engine, None
        if engine is not None:
            try:
                engine.destroy()
            except Exception as e:
                logger.error(f"Engine teardown failed: {e}")

    def _call_engine(self, method: str, *args: Any, failure_message: Optional[str] = None) -> bool:
        if self._engine is None:
            return False
        try:
            getattr(self._engine, method)(*args)
            return True
        except Exception as e:
            logger.error(f"Engine {method} failed: {e}")
            self._fail(PlaybackFatalError(failure_message, details=str(e)))
            return False

    def _fail(self, error: PlaybackError):
        self._teardown()
        self.error = error
        self._set_state(SessionState.ERROR)

    # Transition handlers

    def _on_start(self, event: Start):
        self._teardown()
        generation = self._generation
        timeout = self.settings.load_timeout_seconds

        self.active_url = event.url
        self.error = None
        self.load_deadline = self._get_scheduler().time() + timeout
        self._deadline.schedule(timeout, partial(self._dispatch_from, generation, DeadlineElapsed()))
        self._set_state(SessionState.LOADING)
        logger.info(f"Attempting to play stream: {event.url}")

        try:
            self._engine = self._engine_factory(partial(self._dispatch_from, generation))
        except EngineUnsupported as e:
            logger.error(f"No playback engine: {e}")
            self._fail(PlaybackFatalError(UNSUPPORTED_MESSAGE))
            return
        except Exception as e:
            logger.error(f"Engine creation failed: {e}")
            self._fail(PlaybackFatalError(details=str(e)))
            return
        self._call_engine("load_source", event.url)

    def _on_switch_channel(self, event: SwitchChannel):
        if not self.channel_list or self.url_of is None:
            return
        if not 0 <= event.index < len(self.channel_list):
            logger.debug(f"Channel index {event.index} out of range")
            return
        try:
            url = self.url_of(self.channel_list[event.index])
        except Exception as e:
            logger.error(f"Could not resolve channel {event.index}: {e}")
            self._fail(PlaybackFatalError(details=str(e)))
            return
        self.current_index = event.index
        self.guide_visible = False
        self.mini_guide_visible = False
        self._on_start(Start(url))

    def _on_manifest_parsed(self, event: ManifestParsed):
        logger.info(f"Manifest parsed successfully ({event.levels} levels)")
        self._deadline.cancel()
        self.load_deadline = None
        self._set_state(SessionState.PLAYING)
        self._call_engine("play", failure_message=PLAY_FAILED_MESSAGE)

    def _on_progress(self, event: FragmentLoaded):
        # Progress never extends the load deadline
        pass

    def _on_deadline(self, event: DeadlineElapsed):
        logger.error("Stream loading timeout")
        self._fail(PlaybackFatalError(TIMEOUT_MESSAGE))

    def _on_engine_error(self, event: EngineError):
        classification = classify(event)
        if not classification.is_fatal:
            logger.warning(f"Engine error: {event.type} {event.details}")
            return

        if classification.kind is ErrorKind.NETWORK:
            logger.error(f"Network error ({event.details}) - attempting recovery")
            self._call_engine("start_load")
        elif classification.kind is ErrorKind.MEDIA:
            logger.error(f"Media error ({event.details}) - attempting recovery")
            self._call_engine("recover_media_error")
        else:
            logger.error(f"Fatal error ({event.type} {event.details}) - cannot recover")
            self._fail(classification.to_exception(event.details))

    def _on_close(self, event: Close):
        self._teardown()
        self._controls_timer.cancel()
        self.guide_visible = False
        self.mini_guide_visible = False
        self._set_state(SessionState.CLOSED)

    def _on_pointer_activity(self, event: PointerActivity):
        self.controls_visible = True
        self._controls_timer.schedule(
            self.settings.controls_autohide_seconds,
            partial(self.dispatch, HideControls()),
        )

    def _on_hide_controls(self, event: HideControls):
        if not self.guide_visible and not self.mini_guide_visible:
            self.controls_visible = False

    def _on_toggle_guide(self, event: ToggleGuide):
        if event.mini:
            self.mini_guide_visible = not self.mini_guide_visible
        else:
            self.guide_visible = not self.guide_visible


class SessionManager:
    """Holds the single live playback session; opening a new one closes the old."""

    def __init__(self, engine_factory: EngineFactory, settings: Optional[Settings] = None, scheduler: Optional[Scheduler] = None):
        self._engine_factory = engine_factory
        self._settings = settings
        self._scheduler = scheduler
        self.current: Optional[PlaybackSession] = None

    def open(
        self,
        url: Optional[str] = None,
        channel_list: Sequence[Channel] = (),
        url_of: Optional[Callable[[Channel], str]] = None,
        current_index: int = 0,
    ) -> PlaybackSession:
        """Close any live session, then start a new one on `url` or the indexed channel."""
        if url is None:
            if url_of is None or not 0 <= current_index < len(channel_list):
                raise ValueError("Either a url or a channel list with url_of is required")
            url = url_of(channel_list[current_index])

        self.close()
        session = PlaybackSession(
            self._engine_factory,
            channel_list=channel_list,
            url_of=url_of,
            current_index=current_index,
            settings=self._settings,
            scheduler=self._scheduler,
        )
        self.current = session
        session.start(url)
        return session

    def close(self):
        if self.current is not None:
            self.current.close()
            self.current = None
