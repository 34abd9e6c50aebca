"""Static scanning pipeline: reader, cache, rules, file scanners, engine."""
