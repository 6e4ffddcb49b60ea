from dataclasses import dataclass, field

from ..config import ValidationConfig


@dataclass
class CLIContext:
    """
    Context object passed around as a ``click`` context object, holding
    the settings gathered by the root command.
    """

    validation: ValidationConfig = field(default_factory=ValidationConfig)
    """
    Validation settings from the configuration file, or the defaults.
    """
