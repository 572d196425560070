"""Deterministic flow selection."""

from __future__ import annotations

import logging
from typing import Collection

from .exceptions import NoUsableFlowError
from .models import FlowDescriptor, FlowSet, SelectedFlow

logger = logging.getLogger(__name__)


class FlowSelector:
    """Pick the first flow whose every stage the client can execute.

    Servers list fallback or legacy flows later, so server order is the
    preference order; there is no scoring.
    """

    def is_usable(self, flow: FlowDescriptor, supported_stage_types: Collection[str]) -> bool:
        if not flow.stages:
            return False
        return all(stage in supported_stage_types for stage in flow.stages)

    def select(self, flow_set: FlowSet, supported_stage_types: Collection[str]) -> SelectedFlow:
        for index, flow in enumerate(flow_set.flows):
            if self.is_usable(flow, supported_stage_types):
                return SelectedFlow(flow=flow, index=index)
            unsupported = [stage for stage in flow.stages if stage not in supported_stage_types]
            logger.debug("Skipping flow %d %s due to unsupported stage type(s) %s", index, flow.stages, unsupported)
        raise NoUsableFlowError(flow.stages for flow in flow_set.flows)


__all__ = ["FlowSelector"]
