"""
A command line client for Google Workspace built on the Google API Python client.
The goal is to keep the API plumbing (authentication, resource dicts, paging)
in small wrappers so each command is just: get a service, make a call, render.

Python dataclasses are used for the resource structs and most of the logic is
translating between those and the raw dicts.

Right now Calendar and Cloud Identity groups are supported.  The interesting
part is the team calendar in team.py, which reads every member of a group in
parallel and merges the result into one view.
"""

__version__ = "0.1.0"
