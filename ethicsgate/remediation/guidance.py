"""
Manual guidance for categories where automated rewriting is unsafe.

Guidance carries no code, is never policy compliant by construction and
always ranks after code-bearing candidates.
"""

from typing import Dict, Optional

from ethicsgate.models import Category

GUIDANCE_EFFORT = "critical_review"
GUIDANCE_CONFIDENCE = 0.8
GUIDANCE_RISK_REDUCTION = 0.9

GUIDANCE: Dict[Category, str] = {
    Category.DISCRIMINATION: (
        "Manual review required for discrimination issues:\n"
        "1. Identify the business requirement behind this logic\n"
        "2. Confirm it does not rely on protected characteristics "
        "(nationality, race, gender, religion, age)\n"
        "3. Replace it with legitimate criteria such as verified qualifications "
        "or legal eligibility\n"
        "4. Document the new criteria and have legal review the change\n"
        "5. Add tests showing equal treatment across groups"
    ),
    Category.SURVEILLANCE: (
        "Manual review required for surveillance capabilities:\n"
        "1. Justify why location, camera or activity data is needed\n"
        "2. Request explicit, revocable consent before access\n"
        "3. Collect the minimum data for the stated purpose\n"
        "4. Define retention limits and delete data when they expire\n"
        "5. Tell users clearly what is collected and why"
    ),
    Category.MISUSE: (
        "Manual security review required:\n"
        "1. Remove hardcoded credentials and authentication bypasses\n"
        "2. Never evaluate or execute user-controlled input\n"
        "3. Validate input against an allow-list and use parameterized APIs\n"
        "4. Route privileged actions through normal authorization checks\n"
        "5. Have the security team review the fix before merge"
    ),
}


def guidance_for(category: Category) -> Optional[str]:
    return GUIDANCE.get(Category(category))
