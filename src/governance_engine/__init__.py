"""
Governance Engine - Rank-gated law proposals, voting and resolution

Communities authorize collective actions (declaring war, naming an heir,
changing their ruling structure, broadcasting an announcement, setting a work
tax) through proposals that are voted on, time-boxed and resolved exactly once
into durable effects.

Fun fact: The Icelandic Althing, founded in 930, is often called the oldest
surviving parliament - laws there were proposed, debated and then recited
aloud by the Lawspeaker so nobody could claim they hadn't heard.
"""

from governance_engine.engine import GovernanceEngine

__version__ = "0.1.0"
__all__ = ["GovernanceEngine", "__version__"]
