"""
Bear Court - Two-Party Dispute Mediation
========================================

Each side submits a statement, an AI judge returns a structured verdict,
and either side may raise one objection that triggers re-adjudication.

Core pieces:
1. Case state machine (who may act when)
2. Adjudication oracle client (prompting + verdict parsing)
3. Adjudication guard (in-flight, debounce and cooldown control)
4. Feedback aggregator (one vote per verdict, global satisfaction rate)
"""

__version__ = "5.6.0"
