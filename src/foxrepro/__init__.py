"""Reproducible analysis of Arctic fox litter size and pup survival.

Stage 1 fits sequences of generalized linear mixed models (zero-truncated
Conway-Maxwell Poisson and binomial) with crossed random intercepts,
compares them by AIC, checks residuals by simulation and computes marginal
predictions. Stage 2 renders figures and a self-contained HTML report.

Usage:
    foxrepro render -c configs/analysis.yaml
"""

__version__ = "0.1.0"
