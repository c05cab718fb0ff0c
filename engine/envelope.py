"""Amplitude envelope for synthesized notes."""

from engine.audio_graph import AudioParam, ParamTimeline
from engine.synth_params import EnvelopeParams

PEAK = 0.3  # Per-voice peak gain; leaves headroom for overlapping voices


class EnvelopeModel:
    """Four-stage piecewise-linear envelope (attack, decay, sustain, release).

    The shape is expressed as automation events, so what the analysis helpers
    report is exactly what a gain parameter plays back, including overlapping
    stages when a note is shorter than attack + decay.
    """

    def __init__(self, params: EnvelopeParams | None = None, peak: float = PEAK):
        self.params = params if params is not None else EnvelopeParams()
        self.peak = peak

    def _schedule(self, target, start_time: float, duration: float) -> None:
        p = self.params
        sustain_level = self.peak * p.sustain

        target.set_value_at_time(0.0, start_time)
        target.linear_ramp_to_value_at_time(self.peak, start_time + p.attack)
        target.linear_ramp_to_value_at_time(sustain_level, start_time + p.attack + p.decay)
        target.set_value_at_time(sustain_level, start_time + duration)
        target.linear_ramp_to_value_at_time(0.0, start_time + duration + p.release)

    def apply(self, param: AudioParam, start_time: float, duration: float) -> float:
        """Schedule the envelope on a gain parameter.

        Args:
            param: Target parameter (normally a voice's gain)
            start_time: Note onset in graph seconds
            duration: Nominal note length in seconds (before release)

        Returns:
            Time at which the envelope reaches zero
        """
        self._schedule(param, start_time, duration)
        return self.end_time(start_time, duration)

    def timeline(self, start_time: float, duration: float) -> ParamTimeline:
        """Standalone automation timeline for one note."""
        timeline = ParamTimeline(0.0)
        self._schedule(timeline, start_time, duration)
        return timeline

    def amplitude_at(self, time: float, start_time: float, duration: float) -> float:
        return self.timeline(start_time, duration).value_at(time)

    def end_time(self, start_time: float, duration: float) -> float:
        return start_time + duration + self.params.release
