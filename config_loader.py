import json

import yaml


SERVICE_ACCOUNT_FIELDS = ("project_id", "private_key", "client_email")


class Config:
    def __init__(self, config_filename=None, service_account_filename=None):
        self.service_account_info = None
        if config_filename is not None:
            self.load_config_file(config_filename)
            if service_account_filename is None and self.service_account:
                service_account_filename = self.service_account
        if service_account_filename is not None:
            self.load_service_account(service_account_filename)


    def load_config_file(self, config_filename):
        with open(config_filename, "r") as file:
            config = yaml.load(file.read(), Loader=yaml.FullLoader) or {}
            gcs_config = config.get("GCS", {})
            self.bucket = gcs_config.get("Bucket")
            if not self.bucket:
                raise ValueError(f"{config_filename}: GCS.Bucket is required")
            self.bucket_per_user = bool(gcs_config.get("BucketPerUser", False))
            self.service_account = gcs_config.get("ServiceAccount", ".conf/service_account.json")

            ftp_config = config.get("FTP", {})
            self.ftp_host = ftp_config.get("Host", "0.0.0.0")
            self.ftp_port = int(ftp_config.get("Port", 2121))
            self.ftp_noauth = ftp_config.get("NoAuth", False)
            self.ftp_anonymous_perm = ftp_config.get("AnonymousPerm", "elr")
            self.ftp_auths = ftp_config.get("Auths", [])
            self.ftp_banner = ftp_config.get("Banner", "GCS FTP server ready.")
            self.ftp_masquerade_address = ftp_config.get("MasqueradeAddress")
            passive_ports = ftp_config.get("PassivePorts")
            if passive_ports:
                low, high = passive_ports
                self.ftp_passive_ports = range(int(low), int(high) + 1)
            else:
                self.ftp_passive_ports = None

            logging_config = config.get("Logging", {})
            self.log_level = str(logging_config.get("Level", "INFO")).upper()


    def load_service_account(self, service_account_filename):
        with open(service_account_filename, "r") as file:
            info = json.load(file)
        if info.get("type") != "service_account":
            raise ValueError(f"{service_account_filename}: not a service account file")
        missing = [field for field in SERVICE_ACCOUNT_FIELDS if not info.get(field)]
        if missing:
            raise ValueError(f"{service_account_filename}: missing {', '.join(missing)}")
        self.service_account_info = info
