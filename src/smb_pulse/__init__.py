# SMB Pulse - Business health interpretation for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
SMB Pulse
---------

A Python library and command-line tool that turns accounting-period
profit & loss statements into a bounded set of explainable findings for
small business owners.

Main capabilities:
- canonical, provider-agnostic period statements and cash positions,
- a tagged-variant normalizer for provider report payloads,
- a deterministic metrics engine (variances, ratios, trends, anomalies),
- an issue synthesizer with severity tiers and root-cause de-duplication,
- an explanation gateway that asks a text-generation backend for advice
  only, never for numbers, with a deterministic fallback,
- a question answering service bounded to the computed data,
- a JSON-serializable analysis bundle suitable for any cache or store.

SMB Pulse separates computation (metrics, issues), explanation
(explanations, answers), configuration (TOML) and presentation (CLI),
so the deterministic core can be reused from any outer layer.


Version: 0.2.0

Usage:
    python -m smb_pulse.cli --help
"""

__all__ = ["metrics", "issues", "explanations", "answers", "pipeline"]

__version__ = "0.2.0"
