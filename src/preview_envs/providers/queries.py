"""GraphQL documents for the Railway public API (v2)."""

from __future__ import annotations

_ENVIRONMENT_FIELDS = """
    id
    name
    serviceInstances {
      edges {
        node {
          id
          serviceId
          serviceName
          domains {
            serviceDomains { domain }
            customDomains { domain }
          }
        }
      }
    }
    deploymentTriggers {
      edges {
        node {
          id
          branch
          serviceId
        }
      }
    }
"""

LIST_ENVIRONMENTS = """
query environments($projectId: String!) {
  environments(projectId: $projectId) {
    edges {
      node {
        id
        name
      }
    }
  }
}
"""

GET_ENVIRONMENT = """
query environment($id: String!) {
  environment(id: $id) {%s}
}
""" % _ENVIRONMENT_FIELDS

CREATE_ENVIRONMENT = """
mutation environmentCreate($input: EnvironmentCreateInput!) {
  environmentCreate(input: $input) {%s}
}
""" % _ENVIRONMENT_FIELDS

DELETE_ENVIRONMENT = """
mutation environmentDelete($id: String!) {
  environmentDelete(id: $id)
}
"""

UPSERT_VARIABLES = """
mutation variableCollectionUpsert($input: VariableCollectionUpsertInput!) {
  variableCollectionUpsert(input: $input)
}
"""

UPDATE_DEPLOYMENT_TRIGGER = """
mutation deploymentTriggerUpdate($id: String!, $input: DeploymentTriggerUpdateInput!) {
  deploymentTriggerUpdate(id: $id, input: $input) {
    id
  }
}
"""

DEPLOY_SERVICE_INSTANCE = """
mutation serviceInstanceDeployV2($environmentId: String!, $serviceId: String!) {
  serviceInstanceDeployV2(environmentId: $environmentId, serviceId: $serviceId)
}
"""

GET_SERVICE = """
query service($id: String!) {
  service(id: $id) {
    id
    name
  }
}
"""

DEPLOYMENT_STATUS_SUBSCRIPTION = """
subscription deployment($id: String!) {
  deployment(id: $id) {
    id
    status
  }
}
"""
