# -*- encoding: utf-8 -*-
"""
Report Submitter

Signs sensor reports with an Ethereum personal signature and submits them
to the report contract.
"""

__version__ = "0.1.0"
