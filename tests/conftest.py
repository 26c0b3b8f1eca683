"""Shared fixtures: realistic Sonos documents and SSDP datagrams."""

import pytest

DEVICE_DESCRIPTION = """<?xml version="1.0" encoding="utf-8" ?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:schemas-upnp-org:device:ZonePlayer:1</deviceType>
    <friendlyName>192.168.1.20 - Sonos One - RINCON_000E58A0B2C401400</friendlyName>
    <manufacturer>Sonos, Inc.</manufacturer>
    <modelNumber>S18</modelNumber>
    <modelName>Sonos One</modelName>
    <softwareVersion>56.0-76060</softwareVersion>
    <hardwareVersion>1.20.1.6-1.2</hardwareVersion>
    <serialNum>00-0E-58-A0-B2-C4:7</serialNum>
    <UDN>uuid:RINCON_000E58A0B2C401400</UDN>
    <roomName>Kitchen</roomName>
    <displayName>One</displayName>
    <zoneType>12</zoneType>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:AlarmClock:1</serviceType>
        <serviceId>urn:upnp-org:serviceId:AlarmClock</serviceId>
        <controlURL>/AlarmClock/Control</controlURL>
      </service>
    </serviceList>
    <deviceList>
      <device>
        <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
        <serviceList>
          <service>
            <serviceType>urn:schemas-upnp-org:service:RenderingControl:1</serviceType>
            <controlURL>/MediaRenderer/RenderingControl/Control</controlURL>
          </service>
          <service>
            <serviceType>urn:schemas-upnp-org:service:AVTransport:1</serviceType>
            <serviceId>urn:upnp-org:serviceId:AVTransport</serviceId>
            <controlURL>/MediaRenderer/AVTransport/Control</controlURL>
          </service>
        </serviceList>
      </device>
    </deviceList>
  </device>
</root>
"""

INFO_URL = "http://192.168.1.20:1400/xml/device_description.xml"

POSITION_INFO_RESPONSE = """<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" s:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
<s:Body><u:GetPositionInfoResponse xmlns:u="urn:schemas-upnp-org:service:AVTransport:1">
<Track>3</Track>
<TrackDuration>0:04:12</TrackDuration>
<TrackMetaData>&lt;DIDL-Lite xmlns:dc=&quot;http://purl.org/dc/elements/1.1/&quot; xmlns:upnp=&quot;urn:schemas-upnp-org:metadata-1-0/upnp/&quot; xmlns=&quot;urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/&quot;&gt;&lt;item id=&quot;-1&quot; parentID=&quot;-1&quot;&gt;&lt;upnp:albumArtURI&gt;/getaa?s=1&amp;amp;u=x-sonos-spotify&lt;/upnp:albumArtURI&gt;&lt;dc:title&gt;Teardrop&lt;/dc:title&gt;&lt;dc:creator&gt;Massive Attack&lt;/dc:creator&gt;&lt;upnp:album&gt;Mezzanine&lt;/upnp:album&gt;&lt;/item&gt;&lt;/DIDL-Lite&gt;</TrackMetaData>
<TrackURI>x-sonos-spotify:spotify%3atrack%3a67Hna13dNDkZvBpTXRIaOJ</TrackURI>
<RelTime>0:01:05</RelTime>
</u:GetPositionInfoResponse></s:Body></s:Envelope>
"""

SOAP_FAULT_RESPONSE = """<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/">
<s:Body><s:Fault><faultcode>s:Client</faultcode><faultstring>UPnPError</faultstring></s:Fault></s:Body>
</s:Envelope>
"""

SEARCH_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"CACHE-CONTROL: max-age = 1800\r\n"
    b"EXT:\r\n"
    b"LOCATION: http://192.168.1.20:1400/xml/device_description.xml\r\n"
    b"SERVER: Linux UPnP/1.0 Sonos/56.0-76060 (ZPS18)\r\n"
    b"ST: urn:schemas-upnp-org:device:ZonePlayer:1\r\n"
    b"USN: uuid:RINCON_000E58A0B2C401400::urn:schemas-upnp-org:device:ZonePlayer:1\r\n"
    b"\r\n"
)


def make_notify(nts: str, usn: str = "uuid:RINCON_000E58A0B2C401400::urn:schemas-upnp-org:device:ZonePlayer:1",
                location: str | None = INFO_URL) -> bytes:
    lines = [
        "NOTIFY * HTTP/1.1",
        "HOST: 239.255.255.250:1900",
        "CACHE-CONTROL: max-age = 1800",
        "NT: urn:schemas-upnp-org:device:ZonePlayer:1",
        f"NTS: {nts}",
        f"USN: {usn}",
    ]
    if location is not None:
        lines.append(f"LOCATION: {location}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


@pytest.fixture
def device_description():
    return DEVICE_DESCRIPTION


@pytest.fixture
def position_info_response():
    return POSITION_INFO_RESPONSE


@pytest.fixture
def soap_fault_response():
    return SOAP_FAULT_RESPONSE


@pytest.fixture
def search_response():
    return SEARCH_RESPONSE


@pytest.fixture
def notify():
    return make_notify


@pytest.fixture
def info_url():
    return INFO_URL
