"""Provider Quality: overview

This package classifies medical-imaging providers as higher- or lower-quality
from peer-review records of their exams. The batch pipeline runs in stages:

1) Metric derivation (``provider_quality.metrics``)
	- Per-review false-positive, false-negative and error rates from
	  confusion-matrix counts, plus significance-weighted variants.

2) Exam collapse and provider roll-up (``provider_quality.aggregate``)
	- Duplicate reviews of one exam merged into one record, then exams rolled
	  up per provider with count-weighted rate means.

3) Normalization (``provider_quality.standardize_features``)
	- Z-scores for the score and rate features; undefined rates become 0.

4) Clustering (``provider_quality.clustering``)
	- K-Means with k=2, optionally weighted by exam volume, and the
	  "good"/"bad" labelling of the two clusters.

5) Orchestration (``provider_quality.pipeline``)
	- Ties the stages together, writes tables under ``outputs/`` and joins
	  the optional equipment and sub-specialization tables.
"""
