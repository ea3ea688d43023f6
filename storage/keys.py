"""
Handoff store keys shared by the pipeline stages.
"""

GITLAB_PULL_REQUESTS = "GitLab:PullRequests"
BITBUCKET_PULL_REQUESTS = "Bitbucket:PullRequests"
GITLAB_PULL_REQUESTS_BY_USER = "GitLab:PullRequests:ByUser"
BITBUCKET_PULL_REQUESTS_BY_USER = "Bitbucket:PullRequests:ByUser"
GITLAB_RELEASE_BRANCHES = "GitLab:ReleaseBranches"
BITBUCKET_RELEASE_BRANCHES = "Bitbucket:ReleaseBranches"
AZURE_DEVOPS_WORK_ITEMS = "AzureDevOps:WorkItems"
AZURE_DEVOPS_USER_STORIES = "AzureDevOps:WorkItems:UserStories"
AZURE_DEVOPS_USER_STORIES_TEAM_MAPPED = "AzureDevOps:WorkItems:UserStories:TeamMapped"
CONSOLIDATED_RELEASE_DATA = "ConsolidatedReleaseData"

PULL_REQUESTS = {"gitlab": GITLAB_PULL_REQUESTS, "bitbucket": BITBUCKET_PULL_REQUESTS}
PULL_REQUESTS_BY_USER = {"gitlab": GITLAB_PULL_REQUESTS_BY_USER, "bitbucket": BITBUCKET_PULL_REQUESTS_BY_USER}
RELEASE_BRANCHES = {"gitlab": GITLAB_RELEASE_BRANCHES, "bitbucket": BITBUCKET_RELEASE_BRANCHES}
