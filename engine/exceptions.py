"""Custom exceptions for the Music Box engine."""


class MusicBoxError(Exception):
    """Base exception for all Music Box errors."""

    pass


class BackendUnavailableError(MusicBoxError):
    """Playback backend (audio device / clock) could not be acquired or resumed."""

    pass


class GraphDataError(MusicBoxError):
    """Relation graph dataset could not be loaded or is malformed."""

    pass


class ReverbError(MusicBoxError):
    """Reverb impulse response could not be built."""

    pass


class AudioGraphError(MusicBoxError):
    """Error in audio node graph operations."""

    pass


class InvalidNodeStateError(AudioGraphError):
    """Node operation not valid in its current state (e.g. stop before start)."""

    pass


class NodeConnectionError(AudioGraphError):
    """Invalid connect/disconnect request (e.g. disconnecting an unconnected node)."""

    pass


class ExportError(MusicBoxError):
    """Error during offline rendering or file encoding."""

    pass

