"""Error taxonomy for the Instapod pipeline.

Item-level errors (extraction, translation, synthesis, state write) are caught
at the item boundary by the orchestrator. SourceUnavailable aborts a run
attempt. ConfigInvalid is fatal at startup.
"""


class InstapodError(Exception):
    """Base class for all Instapod errors."""
    pass


class SourceUnavailable(InstapodError):
    """Listing or fetching from the article source failed."""
    pass


class ExtractionFailed(InstapodError):
    """Article content could not be turned into readable text."""
    pass


class TranslationFailed(InstapodError):
    """The translation endpoint kept failing after all retry attempts."""
    pass


class SynthesisFailed(InstapodError):
    """The isolated TTS worker failed, timed out or produced no audio."""
    pass


class StateWriteFailed(InstapodError):
    """Persisting the pipeline state to disk failed."""
    pass


class ConfigInvalid(InstapodError):
    """Required settings are missing or malformed."""
    pass
