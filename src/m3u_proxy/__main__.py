import m3u_proxy.web_server
import m3u_proxy.utilities as u
import os, sys, logging

# CONFIGURE LOGGING
log_file_path = os.path.join(u.get_data_dir(), f"{u.APP}.log")
os.makedirs(os.path.dirname(log_file_path), exist_ok=True)

stdout_handler = logging.StreamHandler(sys.stdout)
stdout_handler.setLevel(logging.INFO)
file_handler = logging.FileHandler(filename=log_file_path, encoding='utf-8')

logging.basicConfig(handlers=[stdout_handler, file_handler],
                    format='%(levelname)s:%(message)s',
                    level=logging.DEBUG)

logger = logging.getLogger(__name__)

def main():
    ws = m3u_proxy.web_server.WebServer()
    try:
        ws.start()
    except KeyboardInterrupt:
        logger.info("stream proxy stopped")

if __name__ == '__main__':
    main()
