"""
Ingest package: thin HTTP clients for GitLab, Bitbucket and Azure DevOps.
"""
