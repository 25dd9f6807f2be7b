# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/orchestrator/__init__.py
from .orchestrator import Orchestrator, PipelineResult, PipelineState, Pwsh7Customizer

__all__ = ["Orchestrator", "PipelineResult", "PipelineState", "Pwsh7Customizer"]
