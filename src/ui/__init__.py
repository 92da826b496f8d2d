"""
User interface logic for the summary popup.

Placement geometry and the popup state controller; widget construction is
left to the host.
"""

from .placement import PlacementEngine, PlacementOptions, PopupPlacement, PopupSize
from .popup_controller import PopupController, DEFAULT_POPUP_SIZE

__all__ = [
    'PlacementEngine', 'PlacementOptions', 'PopupPlacement', 'PopupSize',
    'PopupController', 'DEFAULT_POPUP_SIZE'
]
