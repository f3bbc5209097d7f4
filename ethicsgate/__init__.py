"""
EthicsGate - ethics and compliance risk scanning for source code.

Scans source text for surveillance, discrimination, privacy, misuse and
manipulation patterns and turns the matches into a governed decision:

- Per-category risk metrics and classified violations
- Severity adjustment by developer role and team context
- Policy-validated remediation candidates
- A commit-time allow/block gate with exportable compliance reports
- A heuristic patent-risk scanner feeding the same gate
"""

__version__ = "0.3.2"
__author__ = "EthicsGate Contributors"
