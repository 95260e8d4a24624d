from __future__ import annotations

from dataclasses import dataclass

from answer_engine.config import get_settings
from answer_engine.errors import InvalidInputError

BASIC = 'basic'
PREMIUM = 'premium'
FILE_UPLOAD = 'file_upload'
UNLIMITED_DAILY = 9999


@dataclass
class PlanPolicy:
    plan: str
    name: str
    daily_limit: int
    monthly_limit: int
    model_tier: str
    max_tokens: int
    temperature: float
    verbosity: str
    features: list[str]


POLICIES = {
    'free': PlanPolicy(
        plan='free',
        name='Free',
        daily_limit=5,
        monthly_limit=150,
        model_tier=BASIC,
        max_tokens=500,
        temperature=0.7,
        verbosity='Answer concisely in a few sentences.',
        features=[],
    ),
    'hobby': PlanPolicy(
        plan='hobby',
        name='Hobbyist',
        daily_limit=UNLIMITED_DAILY,
        monthly_limit=100,
        model_tier=PREMIUM,
        max_tokens=1500,
        temperature=0.7,
        verbosity='Give a detailed, step-by-step answer where it helps.',
        features=[FILE_UPLOAD],
    ),
    'occ': PlanPolicy(
        plan='occ',
        name='Occasional',
        daily_limit=UNLIMITED_DAILY,
        monthly_limit=300,
        model_tier=PREMIUM,
        max_tokens=1500,
        temperature=0.7,
        verbosity='Give a detailed, step-by-step answer where it helps.',
        features=[FILE_UPLOAD],
    ),
    'pro': PlanPolicy(
        plan='pro',
        name='Professional',
        daily_limit=UNLIMITED_DAILY,
        monthly_limit=600,
        model_tier=PREMIUM,
        max_tokens=1500,
        temperature=0.7,
        verbosity='Give a detailed, step-by-step answer where it helps.',
        features=[FILE_UPLOAD],
    ),
    'ent': PlanPolicy(
        plan='ent',
        name='Enterprise',
        daily_limit=UNLIMITED_DAILY,
        monthly_limit=5000,
        model_tier=PREMIUM,
        max_tokens=1500,
        temperature=0.7,
        verbosity='Give a detailed, step-by-step answer where it helps.',
        features=[FILE_UPLOAD],
    ),
}


def get_policy(plan: str) -> PlanPolicy:
    policy = POLICIES.get(plan)
    if policy is None:
        raise InvalidInputError(f'unknown plan: {plan}', {'plans': sorted(POLICIES)})
    return policy


def model_for_tier(tier: str) -> str:
    settings = get_settings()
    if tier == PREMIUM:
        return settings.ollama_premium_model
    return settings.ollama_model
