"""Run the netpol-gitops command line tool."""

from .tool.netpol_gitops import main

main()
