from qrydex.trust.engine import TrustScoreResult, compute_trust_score

__all__ = ["TrustScoreResult", "compute_trust_score"]
