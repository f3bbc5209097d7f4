"""Pattern catalogue, matchers and the detection engine."""

__all__ = ["DetectionEngine", "PatternCatalogue", "ScanBatch", "RegexMatcher", "PatternSyntaxError"]


# Lazy imports keep ethicsgate.detection.matcher importable from config models
def __getattr__(name):
    if name in ("DetectionEngine", "ScanBatch"):
        from ethicsgate.detection import engine
        return getattr(engine, name)
    if name == "PatternCatalogue":
        from ethicsgate.detection.catalogue import PatternCatalogue
        return PatternCatalogue
    if name in ("RegexMatcher", "PatternSyntaxError"):
        from ethicsgate.detection import matcher
        return getattr(matcher, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
