"""API subpackage for the batch scoring service.

Routes cover service discovery, running jobs, and job status. They stay thin
layers over ``ServiceRegistry`` and ``ScoringAdapter``.
"""
