"""
Sandbox Module

Isolated execution environment for untrusted submission code.

This module provides:
- Subprocess-based code execution, one fresh process per call
- Wall-clock timeout enforcement (interval timer plus parent-side kill)
- Memory and CPU limits (platform-dependent)
- Restricted builtins with import allowlisting, per namespace
- Bounded log capture and structural equality as bound capabilities

WARNING: This sandbox is NOT cryptographically secure. It provides best-effort
isolation on top of the host's process model; it is not a defence against a
determined attacker with filesystem or network goals.
"""

__version__ = "0.1.0"
