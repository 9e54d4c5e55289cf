"""Command line tool for netpol-gitops."""
