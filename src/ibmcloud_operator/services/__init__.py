"""Service clients for the IBM Cloud Operator."""
