"""
Direct-repeat clustering and consensus calling for CRISPR reads.

Top-level module, including the package's warning hierarchy.
"""


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class DrlibWarning(Warning): pass
class PlacementWarning(DrlibWarning):
    """A variant could not be placed against its group's master sequence."""
class RejectionWarning(DrlibWarning):
    """A group's consensus failed a quality gate and the group was discarded."""
class ConsistencyWarning(DrlibWarning):
    """A group hit an internal consistency error and was discarded so the run could continue."""
