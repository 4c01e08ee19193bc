"""JSON boundary of the matching pipeline: request payloads, responses and converters."""
