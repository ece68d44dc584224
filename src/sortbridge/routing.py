import logging

from sortbridge.protocol.messages import ProtocolError

logger = logging.getLogger(__name__)


class PathResolver:
    """
    Determines the conveyor path a reported package travels on.

    Precedence: an explicit pathId in the report, then the path of the source device,
    then the sort code table, then the region table, and finally the default path.
    """

    def __init__(self, settings):
        """
        :param settings: RoutingSettings with default_path and the device, sort_code and region mappings
        """
        self.settings = settings

    def resolve(self, report):
        """
        :raises ProtocolError: the report carries a destination that is not an object
        """
        settings = self.settings
        path_id = report.get('pathId')
        if path_id:
            return path_id

        device_id = report.get('sourceDeviceId')
        if device_id and device_id in settings.devices:
            return settings.devices[device_id]

        destination = report.get('destination') or {}
        if not isinstance(destination, dict):
            raise ProtocolError("package %s has destination %r, expected an object" %
                                (report.get('packageId'), destination))
        for sort_code in (destination.get('sortCode'), report.get('sortCode')):
            if sort_code is not None and str(sort_code) in settings.sort_codes:
                return settings.sort_codes[str(sort_code)]

        region = destination.get('region')
        if region and region in settings.regions:
            return settings.regions[region]

        logger.debug("package %s has no route, using default path %s" %
                     (report.get('packageId'), settings.default_path))
        return settings.default_path
