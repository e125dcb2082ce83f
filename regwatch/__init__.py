"""regwatch - regulatory update monitoring pipeline.

Crawls a registry of regulatory-authority sources, extracts candidate
updates, classifies and deduplicates them, and signals downstream impact
assessment exactly once per genuinely new update.
"""

__version__ = "0.3.0"
__author__ = "regwatch contributors"
