"""
SCORM 2004 Sequencing & Navigation engine.

Interprets a course's activity tree and its sequencing rules to decide, on
every navigation request, which activity becomes current, whether it may be
attempted, and how completion and success roll up through the tree.

Components:
- ActivityTreeManager: Builds and queries the activity tree
- SequencingRuleEvaluator: Pre-, post- and exit-condition rules
- RollupEngine: Bottom-up status aggregation
- NavigationRequestHandler: The navigation state machine
- SequencingSession: Facade used by the RTE and the GUI
"""
from scorm_sn.core.constants import SN_SERVICE_VERSION
from scorm_sn.sequencing.session import SequencingSession, SequencingState

__version__ = SN_SERVICE_VERSION

__all__ = [
    "SequencingSession",
    "SequencingState",
    "__version__",
]
