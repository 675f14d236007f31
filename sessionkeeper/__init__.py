# -*- coding: utf-8 -*-
"""Keeps SAML-federated AWS sessions alive in ~/.aws/credentials."""

__version__ = "1.0.0"
