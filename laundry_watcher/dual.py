"""
Dual-occupancy channels: two machines behind one metered circuit.

Power says whether anything runs; current says whether one or two loads
do. With only one load active a single shared meter cannot tell which
unit it is, so single-unit activity is always attributed to the FIRST
machine of the pair. Real per-unit attribution needs per-unit sensing.
"""

from typing import List, Optional, Tuple

from .config import ChannelProfile
from .fsm import ChannelStateMachine, run_request


def unit_requests(profile: ChannelProfile, power: float,
                  current: Optional[float]) -> Tuple[Optional[bool], Optional[bool]]:
    """(first, second) run requests for a paired channel reading."""
    request = run_request(profile, power)
    if request is not True:
        return request, request
    both = current is not None and current >= profile.dual_current_threshold_a
    return True, both


class DualOccupancyChannel:

    def __init__(self, profile: ChannelProfile, first: ChannelStateMachine, second: ChannelStateMachine):
        self.profile = profile
        self.units: List[ChannelStateMachine] = [first, second]

    def update_power(self, power: float, current: Optional[float] = None):
        requests = unit_requests(self.profile, power, current)
        for fsm, wants_run in zip(self.units, requests):
            fsm.observe(power, current)
            fsm.apply(wants_run)
