"""Synthesis parameter snapshots.

SynthParams is immutable; updates produce a new snapshot that the engine
swaps in atomically, so a tick always reads one consistent parameter set.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from composition.musical_time import MusicalDuration

FilterType = Literal["lowpass", "bandpass", "highpass"]
FilterOrder = Literal[6, 12, 24]


class EnvelopeParams(BaseModel):
    """ADSR times in seconds; sustain as a fraction of peak."""

    model_config = ConfigDict(frozen=True)

    attack: float = Field(default=0.01, ge=0.0, le=10.0)
    decay: float = Field(default=0.1, ge=0.0, le=10.0)
    sustain: float = Field(default=0.0, ge=0.0, le=1.0)
    release: float = Field(default=0.0, ge=0.0, le=10.0)


class VibratoParams(BaseModel):
    """Pitch LFO; depth is a fraction of the carrier frequency."""

    model_config = ConfigDict(frozen=True)

    rate: float = Field(default=4.8, ge=0.0, le=50.0)
    depth: float = Field(default=0.003, ge=0.0, le=0.5)


class TremoloParams(BaseModel):
    """Amplitude LFO; gain oscillates within [1 - depth, 1]."""

    model_config = ConfigDict(frozen=True)

    rate: float = Field(default=2.1, ge=0.0, le=50.0)
    depth: float = Field(default=0.25, ge=0.0, le=1.0)


class DelayParams(BaseModel):
    """Tempo-synced feedback delay with a filter cascade in the loop."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    duration: MusicalDuration = "1/2"
    feedback: float = Field(default=0.25, ge=0.0, le=0.95)
    mix: float = Field(default=0.4, ge=0.0, le=1.0)
    filter_type: FilterType = "lowpass"
    filter_frequency: float = Field(default=1000.0, gt=0.0, le=20000.0)
    filter_resonance: float = Field(default=1.0, ge=0.1, le=20.0)
    filter_order: FilterOrder = 12

    @property
    def filter_stages(self) -> int:
        """Number of second-order sections (6 dB/octave each)."""
        return self.filter_order // 6


class SynthParams(BaseModel):
    """Complete synthesis parameter set."""

    model_config = ConfigDict(frozen=True)

    envelope: EnvelopeParams = Field(default_factory=EnvelopeParams)
    vibrato: VibratoParams = Field(default_factory=VibratoParams)
    tremolo: TremoloParams = Field(default_factory=TremoloParams)
    delay: DelayParams = Field(default_factory=DelayParams)
    max_note_duration: MusicalDuration = "1/4"

    def merged(self, update: "SynthParamsUpdate") -> "SynthParams":
        """Return a new snapshot with the update's fields applied.

        Nested groups are merged field by field; the result is validated.
        """
        data = self.model_dump()
        for group, values in update.model_dump(exclude_unset=True, exclude_none=True).items():
            if isinstance(values, dict):
                data[group].update(values)
            else:
                data[group] = values
        return SynthParams.model_validate(data)


class EnvelopeUpdate(BaseModel):
    attack: Optional[float] = Field(default=None, ge=0.0, le=10.0)
    decay: Optional[float] = Field(default=None, ge=0.0, le=10.0)
    sustain: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    release: Optional[float] = Field(default=None, ge=0.0, le=10.0)


class VibratoUpdate(BaseModel):
    rate: Optional[float] = Field(default=None, ge=0.0, le=50.0)
    depth: Optional[float] = Field(default=None, ge=0.0, le=0.5)


class TremoloUpdate(BaseModel):
    rate: Optional[float] = Field(default=None, ge=0.0, le=50.0)
    depth: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class DelayUpdate(BaseModel):
    enabled: Optional[bool] = None
    duration: Optional[MusicalDuration] = None
    feedback: Optional[float] = Field(default=None, ge=0.0, le=0.95)
    mix: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    filter_type: Optional[FilterType] = None
    filter_frequency: Optional[float] = Field(default=None, gt=0.0, le=20000.0)
    filter_resonance: Optional[float] = Field(default=None, ge=0.1, le=20.0)
    filter_order: Optional[FilterOrder] = None


class SynthParamsUpdate(BaseModel):
    """Partial parameter change; unset fields keep their current value."""

    model_config = ConfigDict(extra="forbid")

    envelope: Optional[EnvelopeUpdate] = None
    vibrato: Optional[VibratoUpdate] = None
    tremolo: Optional[TremoloUpdate] = None
    delay: Optional[DelayUpdate] = None
    max_note_duration: Optional[MusicalDuration] = None

    def touches_delay(self) -> bool:
        """Whether the live effects chain needs updating."""
        return self.delay is not None and bool(
            self.delay.model_dump(exclude_unset=True, exclude_none=True)
        )
