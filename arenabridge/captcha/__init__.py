"""Challenge detection, automated solving and manual resolution."""

from arenabridge.captcha.gate import CaptchaGate, CaptchaSignals
from arenabridge.captcha.solver import CaptchaSolver, CaptchaSolverError, CapSolverClient

__all__ = [
    "CapSolverClient",
    "CaptchaGate",
    "CaptchaSignals",
    "CaptchaSolver",
    "CaptchaSolverError",
]
