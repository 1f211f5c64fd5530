"""Frame sampling, cost estimation and AI verification."""

from .cost import CostEstimate, CostEstimator
from .judge import FakeJudgeClient, JudgeClient, JudgeReply, JudgeRequest, OpenAIJudgeClient, build_prompt
from .models import JudgeVerdict, TimelineEntry, VerificationResult, decode_verdict
from .orchestrator import VerificationOrchestrator
from .sampling import FrameSample, FrameSampler, FrameSequence, SamplePlan, plan_samples

__all__ = [
    "CostEstimate",
    "CostEstimator",
    "FakeJudgeClient",
    "FrameSample",
    "FrameSampler",
    "FrameSequence",
    "JudgeClient",
    "JudgeReply",
    "JudgeRequest",
    "JudgeVerdict",
    "OpenAIJudgeClient",
    "SamplePlan",
    "TimelineEntry",
    "VerificationOrchestrator",
    "VerificationResult",
    "build_prompt",
    "decode_verdict",
    "plan_samples",
]
