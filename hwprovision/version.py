HWPROVISION_VERSION = '0.3.0'   # version of the client package
