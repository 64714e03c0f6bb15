"""Cloud-init script run on first boot of a dynamic hosting instance."""

DOCKER_BOOTSTRAP = """#!/bin/bash
set -e

apt-get update -y
apt-get upgrade -y

# Docker and docker-compose
curl -fsSL https://get.docker.com -o get-docker.sh
sh get-docker.sh
systemctl start docker
systemctl enable docker
usermod -aG docker ubuntu
curl -L "https://github.com/docker/compose/releases/latest/download/docker-compose-$(uname -s)-$(uname -m)" \\
  -o /usr/local/bin/docker-compose
chmod +x /usr/local/bin/docker-compose

apt-get install -y htop iotop

mkdir -p /app
cd /app
{env_exports}
cat > /app/deploy.sh << 'DEPLOY_SCRIPT'
#!/bin/bash
cd /app
if [ -f docker-compose.yml ]; then
  docker-compose down
  docker-compose up -d
elif [ -f Dockerfile ]; then
  docker build -t app:latest .
  docker stop app || true
  docker rm app || true
  docker run -d --name app -p {app_port}:{app_port} --restart unless-stopped app:latest
fi
DEPLOY_SCRIPT
chmod +x /app/deploy.sh

echo "Server setup complete"
"""


def render_user_data(runtime: str, app_port: int, env: dict[str, str] | None = None) -> str:
    if runtime != "docker":
        raise ValueError(f"Unsupported runtime: {runtime}")
    env_exports = "\n".join(f'export {key}="{value}"' for key, value in (env or {}).items())
    return DOCKER_BOOTSTRAP.format(env_exports=env_exports, app_port=app_port)
